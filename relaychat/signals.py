from PyQt6.QtCore import QObject, pyqtSignal


class Signals(QObject):
    state_changed = pyqtSignal(str)
    notice = pyqtSignal(str)
    message = pyqtSignal(str, str, str)          # conversation_id, sender, text
    history = pyqtSignal(str, object)            # conversation_id, [StoredMessage]
    conversation_updated = pyqtSignal(str)       # unread indicator for a background conversation
    conversations = pyqtSignal(object)           # [ConversationSummary]
    storage_warning = pyqtSignal(str)
    error = pyqtSignal(str)
