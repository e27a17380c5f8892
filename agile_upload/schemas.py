from pydantic import BaseModel, ConfigDict, Field


class RpcRequest(BaseModel):
    jsonrpc: str = "2.0"
    method: str
    params: dict = Field(default_factory=dict)
    id: int


class LoginParams(BaseModel):
    username: str
    password: str


class PathParams(BaseModel):
    path: str = Field(min_length=1)


class MpidParams(BaseModel):
    mpid: str = Field(min_length=1)


class ListMultipartPieceParams(BaseModel):
    mpid: str = Field(min_length=1)
    cookie: int = Field(ge=1)
    pagesize: int = Field(gt=0)


class NoopParams(BaseModel):
    operation: str = "lvp"


class CodeResult(BaseModel):
    code: int


class CreateMultipartResult(BaseModel):
    mpid: str = Field(min_length=1)


class MultipartStatusResult(BaseModel):
    code: int
    state: int | None = None


class CompleteMultipartResult(BaseModel):
    code: int
    numpieces: int


class PieceEntry(BaseModel):
    size: int = Field(ge=0)


class ListMultipartPieceResult(BaseModel):
    code: int
    pieces: list[PieceEntry] | None = None


class FileEntry(BaseModel):
    name: str = ""
    type: int | None = None


class ListFileResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entries: list[FileEntry] | None = Field(default=None, alias="list")
