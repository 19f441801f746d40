from agent_chat.session.orchestrator import SessionOrchestrator

__all__ = ["SessionOrchestrator"]
