import io
import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from mime_multipart.decoders import get_decoder
    from mime_multipart.exceptions import DecodeError

ENCODINGS = ["base64", "quoted-printable", "7bit"]


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    decoder = get_decoder(fdp.PickValueInList(ENCODINGS), io.BytesIO())

    try:
        for chunk in fdp.ConsumeChunks(fdp.ConsumeRandomBytes()):
            decoder.write(chunk)
        if hasattr(decoder, "finalize"):
            decoder.finalize()
    except DecodeError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
