"""Project editing session tests."""

import json
import math

import pytest

from pawnai_studio.core.config import PipelineSettings
from pawnai_studio.core.edits import Mix, NoiseReduction, PitchShift, ToneChange, Trim
from pawnai_studio.core.errors import (
    ArtifactNotSealed,
    InvalidRange,
    MissingReference,
    NothingToRedo,
    NothingToUndo,
)
from pawnai_studio.core.frames import AudioFormat
from pawnai_studio.core.log import SessionJournal
from pawnai_studio.core.pipeline import TransformPipeline
from pawnai_studio.core.project import Project
from pawnai_studio.core.storage import ArtifactHandle

from conftest import RATE, sine_pcm


def duration(store, handle):
    return store.info(handle).duration


def test_trim_undo_redo_durations(store, project):
    assert duration(store, project.current_artifact()) == pytest.approx(3.0)

    project.apply(Trim(0.5, 2.5))
    assert duration(store, project.current_artifact()) == pytest.approx(2.0)

    project.undo()
    current = project.current_artifact()
    assert current == project.raw
    assert duration(store, current) == pytest.approx(3.0)

    project.redo()
    assert duration(store, project.current_artifact()) == pytest.approx(2.0)


def test_invalid_trim_leaves_history_and_artifact_unchanged(store, project):
    project.apply(PitchShift(1.5))
    before = project.current_artifact()
    version = project.history.version

    with pytest.raises(InvalidRange):
        project.apply(Trim(2.0, 1.0))

    assert list(project.current_commands()) == [PitchShift(1.5)]
    assert project.history.version == version
    assert project.current_artifact() == before


@pytest.mark.parametrize("end", [math.nan, math.inf])
def test_non_finite_trim_is_rejected(project, end):
    with pytest.raises(InvalidRange):
        project.apply(Trim(0.0, end))
    assert list(project.current_commands()) == []


def test_missing_mix_reference_is_rejected(store, project):
    project.apply(ToneChange("warm"))
    before = project.current_artifact()

    with pytest.raises(MissingReference):
        project.apply(Mix(ArtifactHandle("f" * 64, sealed=True)))

    assert list(project.current_commands()) == [ToneChange("warm")]
    assert project.current_artifact() == before


def test_repeated_noise_reduction_is_stored_once(store, project):
    project.apply(PitchShift(1.5))
    assert project.apply(NoiseReduction()) is True
    first = project.current_artifact()

    assert project.apply(NoiseReduction()) is False
    assert len(project.history) == 2
    assert project.current_artifact() == first


def test_replaying_current_commands_is_byte_identical(store, project):
    project.apply(Trim(0.25, 2.75))
    project.apply(PitchShift(0.75))
    project.apply(ToneChange("radio"))
    current = store.read(project.current_artifact())

    commands = project.current_commands()
    project.pipeline.clear_cache()
    first = project.pipeline.render(project.raw, commands)
    assert store.read(first) == current
    project.pipeline.clear_cache()
    second = project.pipeline.render(project.raw, commands)
    assert store.read(second) == current


def test_apply_after_undo_clears_redo(project):
    project.apply(Trim(0.0, 2.0))
    project.apply(PitchShift(1.25))
    project.undo()
    project.apply(ToneChange("deep"))

    with pytest.raises(NothingToRedo):
        project.redo()
    assert list(project.current_commands()) == [Trim(0.0, 2.0), ToneChange("deep")]


def test_undo_on_fresh_project(project):
    with pytest.raises(NothingToUndo):
        project.undo()


def test_redo_revalidates_references(store, project):
    background = store.put(sine_pcm(1.0, frequency=220.0), AudioFormat(RATE))
    project.apply(Mix(background, gain=0.5))
    project.current_artifact()
    project.undo()
    project.current_artifact()

    store.release(background)
    with pytest.raises(MissingReference):
        project.redo()
    assert project.history.can_redo
    assert len(project.history) == 0


def test_stale_until_current_artifact(project):
    assert not project.is_stale
    project.apply(Trim(0.0, 1.0))
    assert project.is_stale
    project.current_artifact()
    assert not project.is_stale


def test_rapid_edits_settle_on_latest_commands(store, project):
    for ratio in (0.6, 0.8, 1.2, 1.4, 1.6):
        project.apply(PitchShift(ratio))
        project.undo()
    project.apply(PitchShift(2.0))

    current = project.current_artifact()
    assert store.info(current).sample_count == 3 * RATE // 2


def test_unsealed_raw_is_rejected(store):
    pending = store.allocate(AudioFormat(RATE))
    with pytest.raises(ArtifactNotSealed):
        Project(store, pending)


def test_journal_records_history_mutations(store, raw_capture, tmp_path):
    journal = SessionJournal(tmp_path / "sessions.jsonl")
    with Project(store, raw_capture, journal=journal) as project:
        project.apply(Trim(0.5, 2.5))
        project.apply(NoiseReduction())
        project.undo()
        project.redo()

    records = [json.loads(line) for line in journal.path.read_text(encoding="utf-8").splitlines()]
    assert [record["action"] for record in records] == ["apply", "apply", "undo", "redo"]
    assert [record["ordinal"] for record in records] == [0, 1, 1, 1]
    assert records[0]["project_id"] == raw_capture.key
    assert records[0]["command"] == {"kind": "trim", "start": 0.5, "end": 2.5}


def test_script_is_edited_independently(project):
    project.apply(Trim(0.0, 1.0))
    project.script.insert(0, "Intro")
    project.script.undo()
    assert project.script.text == ""
    assert list(project.current_commands()) == [Trim(0.0, 1.0)]


def test_retained_result_outlives_cache_eviction(store, raw_capture):
    pipeline = TransformPipeline(store, PipelineSettings(cache_size=1))
    with Project(store, raw_capture, pipeline) as project:
        project.apply(Trim(0.0, 1.0))
        kept = project.current_artifact()
        store.retain(kept)

        project.apply(NoiseReduction())
        latest = project.current_artifact()

    assert latest != kept
    assert store.resolves(kept)
    store.release(kept)
    assert not store.resolves(kept)
