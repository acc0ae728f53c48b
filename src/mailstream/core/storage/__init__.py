from .attachments import AttachmentStore, SavedAttachment

__all__ = ["AttachmentStore", "SavedAttachment"]
