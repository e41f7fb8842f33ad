import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from mime_multipart.exceptions import MultipartError
    from mime_multipart.headers import Headers, parse_options_header


def fuzz_options_header(fdp: EnhancedDataProvider) -> None:
    parse_options_header(fdp.ConsumeRandomBytes())


def fuzz_header_block(fdp: EnhancedDataProvider) -> None:
    lines = fdp.ConsumeRandomBytes().splitlines(keepends=True)
    headers = Headers.parse(lines, max_line_size=1024, max_count=16, max_value_size=4096)
    headers.content_type()
    headers.filename()


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [fuzz_options_header, fuzz_header_block]
    target = fdp.PickValueInList(targets)

    try:
        target(fdp)
    except MultipartError:
        return
    except AssertionError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
