"""Core capture and editing engine for PawnAI Studio."""

from .amplitude import AmplitudeReducer, AmplitudeSample, AmplitudeSubscription
from .config import AppConfig, CaptureSettings, PipelineSettings, VisualizationSettings
from .edits import Mix, NoiseReduction, PitchShift, ToneChange, Trim
from .frames import AudioFormat, AudioFrame
from .history import EditHistory
from .log import SessionJournal
from .pipeline import CancelToken, TransformPipeline
from .project import Project
from .recording import RecordingController, RecordingSession, RecordingState
from .script import ScriptDocument
from .sources import MicrophoneFrameSource, SyntheticFrameSource, list_input_devices
from .storage import ArtifactHandle, FileArtifactStore, MemoryArtifactStore, export_artifact

__all__ = [
    "AppConfig",
    "CaptureSettings",
    "VisualizationSettings",
    "PipelineSettings",
    "AudioFormat",
    "AudioFrame",
    "AmplitudeReducer",
    "AmplitudeSample",
    "AmplitudeSubscription",
    "RecordingController",
    "RecordingSession",
    "RecordingState",
    "MicrophoneFrameSource",
    "SyntheticFrameSource",
    "list_input_devices",
    "EditHistory",
    "ScriptDocument",
    "Trim",
    "PitchShift",
    "ToneChange",
    "NoiseReduction",
    "Mix",
    "TransformPipeline",
    "CancelToken",
    "Project",
    "ArtifactHandle",
    "MemoryArtifactStore",
    "FileArtifactStore",
    "export_artifact",
    "SessionJournal",
]
