"""Staging file scope tests."""

import pytest

from app.storage.staging import create_staging_file, discard_file, staged_file, write_chunks, write_stream


async def chunks(*parts):
    for part in parts:
        yield part


@pytest.mark.unit
@pytest.mark.asyncio
async def test_staged_file_removed_after_success(tmp_path):
    async with staged_file(tmp_path, prefix="upload", suffix=".mp3") as path:
        assert path.exists()
        assert path.name.startswith("upload-")
        assert path.suffix == ".mp3"

    assert not path.exists()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_staged_file_removed_after_error(tmp_path):
    with pytest.raises(RuntimeError):
        async with staged_file(tmp_path) as path:
            await write_chunks(path, chunks(b"partial"))
            raise RuntimeError("upstream stalled")

    assert list(tmp_path.iterdir()) == []


@pytest.mark.unit
def test_concurrent_staging_names_unique(tmp_path):
    paths = {create_staging_file(tmp_path, prefix="proxy") for _ in range(200)}
    assert len(paths) == 200


@pytest.mark.unit
@pytest.mark.asyncio
async def test_discard_tolerates_missing_file(tmp_path):
    path = create_staging_file(tmp_path)

    assert await discard_file(path) is True
    assert await discard_file(path) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_write_chunks_counts_bytes(tmp_path):
    async with staged_file(tmp_path) as path:
        written = await write_chunks(path, chunks(b"abc", b"", b"defg"))
        assert written == 7
        assert path.read_bytes() == b"abcdefg"


class AsyncReader:
    """Awaitable read() like an UploadFile."""

    def __init__(self, data: bytes):
        self._data = data
        self.read_sizes = []

    async def read(self, size: int = -1) -> bytes:
        self.read_sizes.append(size)
        chunk, self._data = self._data[:size], self._data[size:]
        return chunk


@pytest.mark.unit
@pytest.mark.asyncio
async def test_write_stream_awaits_reader_in_chunks(tmp_path):
    data = bytes(range(256)) * 40
    reader = AsyncReader(data)

    async with staged_file(tmp_path) as path:
        written = await write_stream(path, reader, chunk_size=4096)
        assert written == len(data)
        assert path.read_bytes() == data

    assert reader.read_sizes == [4096, 4096, 4096]
