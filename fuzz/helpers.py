from __future__ import annotations

import atheris


class EnhancedDataProvider(atheris.FuzzedDataProvider):
    def ConsumeRandomBytes(self) -> bytes:
        return self.ConsumeBytes(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumeRandomString(self) -> str:
        return self.ConsumeUnicodeNoSurrogates(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumeChunks(self, data: bytes) -> list[bytes]:
        """Split ``data`` at random offsets, so the parser sees every kind of
        partial delimiter.
        """
        chunks = []
        while data:
            size = self.ConsumeIntInRange(1, len(data))
            chunks.append(data[:size])
            data = data[size:]
        return chunks
