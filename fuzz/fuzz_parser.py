import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from mime_multipart.exceptions import MultipartError
    from mime_multipart.multipart import parse, parse_message
    from mime_multipart.writer import dumps

CONFIG = {"MAX_INLINE_BYTES": 64, "MAX_NESTING_DEPTH": 4}


def parse_body(fdp: EnhancedDataProvider) -> None:
    body = fdp.ConsumeRandomBytes()
    whole = parse(body, "boundary", config=CONFIG)
    try:
        chunked = parse(fdp.ConsumeChunks(body), "boundary", config=CONFIG)
        try:
            # Chunking never changes the result.
            assert whole == chunked
        finally:
            chunked.close()
    finally:
        whole.close()


def parse_nested(fdp: EnhancedDataProvider) -> None:
    boundary = "boundary"
    body = (
        f"--{boundary}\r\n"
        f"Content-Type: multipart/mixed; boundary={boundary}\r\n\r\n"
        f"{fdp.ConsumeRandomString()}\r\n"
        f"--{boundary}--\r\n"
    )
    parse(body.encode("latin1", errors="ignore"), boundary, config=CONFIG).close()


def parse_full_message(fdp: EnhancedDataProvider) -> None:
    parse_message(fdp.ConsumeRandomBytes(), config=CONFIG).close()


def write_and_parse(fdp: EnhancedDataProvider) -> None:
    tree = parse(fdp.ConsumeRandomBytes(), "boundary", config=CONFIG)
    try:
        data = dumps(tree, boundary="boundary")
        reparsed = parse(data, "boundary", config=CONFIG)
        try:
            assert reparsed == tree
        finally:
            reparsed.close()
    finally:
        tree.close()


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [parse_body, parse_nested, parse_full_message, write_and_parse]
    target = fdp.PickValueInList(targets)

    try:
        target(fdp)
    except MultipartError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
