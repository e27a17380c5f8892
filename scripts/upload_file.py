import argparse
import json
import os
import sys
import time

from agile_upload.config import settings
from agile_upload.endpoint import build_endpoint
from agile_upload.errors import EndpointError
from agile_upload.metrics import metrics_text
from agile_upload.models import plan_chunks


def _progress_printer(total_bytes: int):
    sent = 0

    def _report(count: int) -> None:
        nonlocal sent
        sent += count
        pct = (sent / total_bytes * 100) if total_bytes > 0 else 100.0
        print(f"\r  {sent}/{total_bytes} bytes ({pct:.1f}%)", end="", file=sys.stderr, flush=True)

    return _report


def main() -> int:
    parser = argparse.ArgumentParser(description="Upload a file to the storage endpoint.")
    parser.add_argument("file", help="Local file to upload")
    parser.add_argument("directory", help="Remote target directory")
    parser.add_argument("--name", default="", help="Remote file name (defaults to the local base name)")
    parser.add_argument("--multipart", action="store_true", help="Upload in resumable parts")
    parser.add_argument("--chunk-size-bytes", type=int, default=settings.chunk_size_bytes, help="Part size in bytes")
    parser.add_argument("--resume-mpid", default="", help="Resume an interrupted multipart upload by id")
    parser.add_argument("--make-directory", action="store_true", help="Create the target directory first")
    parser.add_argument("--output", default="", help="Optional path to write JSON summary")
    parser.add_argument("--print-metrics", action="store_true", help="Print client metrics in Prometheus text format")
    args = parser.parse_args()

    name = args.name or os.path.basename(args.file)
    file_size = os.path.getsize(args.file)
    started = time.perf_counter()
    summary: dict = {"file": args.file, "directory": args.directory, "name": name, "file_bytes": file_size}

    try:
        with build_endpoint() as endpoint:
            if args.make_directory:
                endpoint.make_directory(args.directory)

            if not args.multipart and not args.resume_mpid:
                ack = endpoint.upload(args.file, args.directory, name, progress=_progress_printer(file_size))
                summary.update({"mode": "whole", "sha256": ack.digest_hex, "bytes_uploaded": ack.byte_size})
            else:
                uploader = endpoint.multipart
                if args.resume_mpid:
                    session = uploader.resume(args.resume_mpid)
                else:
                    session = uploader.start(args.directory, name)
                summary["mpid"] = session.id

                # Resumed sessions continue after the pieces already stored.
                start_offset = min(file_size, session.pieces_filled * args.chunk_size_bytes)
                chunks = plan_chunks(file_size, args.chunk_size_bytes, start=start_offset)
                try:
                    pieces = uploader.upload_parts(
                        session, args.file, chunks, progress=_progress_printer(file_size - start_offset)
                    )
                    uploader.complete(session)
                except KeyboardInterrupt:
                    print(f"\nInterrupted; resume later with --resume-mpid {session.id}", file=sys.stderr)
                    return 130
                summary.update({"mode": "multipart", "pieces_uploaded": pieces, "chunk_count": session.chunk_count})
    except EndpointError as exc:
        print(f"\n[FAIL] {exc.error_class}: {exc.detail}", file=sys.stderr)
        return 1

    summary["elapsed_seconds"] = round(time.perf_counter() - started, 3)
    print("\nUpload summary:")
    for key, value in summary.items():
        print(f"- {key}: {value}")

    if args.output:
        os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)
        print(f"\nWrote summary to {args.output}")

    if args.print_metrics:
        print(metrics_text())

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
