from prometheus_client import Counter, Histogram, generate_latest

chunks_uploaded_total = Counter("agile_chunks_uploaded_total", "Total multipart pieces uploaded and verified")
bytes_uploaded_total = Counter("agile_bytes_uploaded_total", "Total bytes uploaded and verified")
files_uploaded_total = Counter("agile_files_uploaded_total", "Total whole-file uploads verified")
chunk_upload_failures_total = Counter("agile_chunk_upload_failures_total", "Total failed piece uploads")
integrity_failures_total = Counter("agile_integrity_failures_total", "Acknowledgment header mismatches")
resolve_page_requests_total = Counter("agile_resolve_page_requests_total", "Piece listing pages fetched to resolve offsets")

rpc_request_duration_seconds = Histogram(
    "agile_rpc_request_duration_seconds",
    "JSON-RPC request latency in seconds",
    ["method"],
)
piece_upload_duration_seconds = Histogram("agile_piece_upload_duration_seconds", "Piece upload latency in seconds")


def metrics_text() -> str:
    return generate_latest().decode("utf-8")
