from agent_chat.artifacts.extractor import ArtifactExtractor, ScanResult, default_title

__all__ = ["ArtifactExtractor", "ScanResult", "default_title"]
