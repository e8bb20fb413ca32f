"""Phase orchestration and session lifecycle."""
