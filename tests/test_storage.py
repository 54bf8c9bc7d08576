"""Artifact store tests."""

import numpy as np
import pytest
import soundfile as sf

from pawnai_studio.core.errors import ArtifactNotFound, ArtifactNotSealed, ArtifactSealed
from pawnai_studio.core.frames import AudioFormat
from pawnai_studio.core.storage import (
    ArtifactHandle,
    FileArtifactStore,
    MemoryArtifactStore,
    content_key,
    export_artifact,
)

from conftest import RATE, sine_pcm

MONO = AudioFormat(RATE)


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryArtifactStore()
    return FileArtifactStore(tmp_path / "artifacts")


def test_allocate_append_seal_read(any_store):
    handle = any_store.allocate(MONO)
    assert not handle.sealed
    any_store.append(handle, b"\x01\x00\x02\x00")
    any_store.append(handle, b"\x03\x00")
    assert any_store.info(handle).sample_count == 3

    sealed = any_store.seal(handle)
    assert sealed.sealed
    assert sealed.key == content_key(b"\x01\x00\x02\x00\x03\x00", MONO)
    assert any_store.read(sealed) == b"\x01\x00\x02\x00\x03\x00"
    assert [info.handle for info in any_store.list_artifacts()] == [sealed]


def test_unsealed_artifacts_cannot_be_read(any_store):
    handle = any_store.allocate(MONO)
    with pytest.raises(ArtifactNotSealed):
        any_store.read(handle)
    assert not any_store.resolves(handle)


def test_sealed_artifacts_are_immutable(any_store):
    sealed = any_store.put(b"\x00\x00", MONO)
    with pytest.raises(ArtifactSealed):
        any_store.append(sealed, b"\x00\x00")
    with pytest.raises(ArtifactSealed):
        any_store.seal(sealed)


def test_identical_content_is_stored_once(any_store):
    data = sine_pcm(0.1)
    first = any_store.put(data, MONO)
    second = any_store.put(data, MONO)

    assert first == second
    assert len(any_store.list_artifacts()) == 1
    assert any_store.info(first).references == 2

    any_store.release(first)
    assert any_store.resolves(second)
    any_store.release(second)
    assert not any_store.resolves(first)
    with pytest.raises(ArtifactNotFound):
        any_store.read(first)


def test_format_is_part_of_the_key(any_store):
    data = sine_pcm(0.1)
    assert any_store.put(data, MONO) != any_store.put(data, AudioFormat(22050))


def test_retain_keeps_artifact_alive(any_store):
    handle = any_store.put(sine_pcm(0.1), MONO)
    any_store.retain(handle)
    any_store.release(handle)
    assert any_store.resolves(handle)


def test_releasing_pending_artifact_discards_it(any_store):
    handle = any_store.allocate(MONO)
    any_store.append(handle, b"\x00\x00")
    any_store.release(handle)
    with pytest.raises(ArtifactNotFound):
        any_store.append(handle, b"\x00\x00")


def test_get_handle(any_store):
    handle = any_store.put(sine_pcm(0.1), MONO)
    assert any_store.get_handle(handle.key) == handle
    with pytest.raises(ArtifactNotFound):
        any_store.get_handle("missing")


def test_file_store_writes_lossless_files(tmp_path):
    store = FileArtifactStore(tmp_path / "artifacts")
    data = sine_pcm(0.5, channels=2)
    handle = store.put(data, AudioFormat(RATE, 2))

    path = store.path_for(handle)
    assert path.suffix == ".flac"
    info = sf.info(str(path))
    assert info.samplerate == RATE
    assert info.channels == 2
    assert info.frames == RATE // 2
    assert not list(store.pending_dir.iterdir())

    store.release(handle)
    assert not path.exists()


def test_file_store_indexes_existing_artifacts(tmp_path):
    data = sine_pcm(0.25)
    handle = FileArtifactStore(tmp_path, file_format="wav").put(data, MONO)

    reopened = FileArtifactStore(tmp_path, file_format="wav")
    assert reopened.resolves(handle)
    assert reopened.read(handle) == data
    assert reopened.info(handle).duration == pytest.approx(0.25)


def test_file_store_requires_lossless_format(tmp_path):
    with pytest.raises(ValueError):
        FileArtifactStore(tmp_path, file_format="ogg")


@pytest.mark.parametrize("suffix", ["wav", "flac"])
def test_export_artifact(tmp_path, suffix):
    store = MemoryArtifactStore()
    data = sine_pcm(0.5)
    handle = store.put(data, MONO)

    path = export_artifact(store, handle, tmp_path / "exports" / f"take.{suffix}")
    samples, rate = sf.read(str(path), dtype="int16")
    assert rate == RATE
    assert np.array_equal(samples, np.frombuffer(data, dtype=np.int16))


def test_export_requires_sealed_artifact(tmp_path):
    store = MemoryArtifactStore()
    with pytest.raises(ArtifactNotSealed):
        export_artifact(store, store.allocate(MONO), tmp_path / "take.wav")


def test_handles_print_as_keys():
    assert str(ArtifactHandle("abc", sealed=True)) == "abc"
