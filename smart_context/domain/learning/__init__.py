from .feedback_loop import FeedbackLoop

__all__ = ["FeedbackLoop"]
