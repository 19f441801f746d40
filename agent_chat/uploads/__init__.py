from agent_chat.uploads.coordinator import UploadCoordinator, UploadPolicy

__all__ = ["UploadCoordinator", "UploadPolicy"]
