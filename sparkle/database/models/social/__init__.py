"""Community activity models consumed by progress rules."""

from .activity import Comment, Follow, LoginEvent, Post, Reaction

__all__ = ["Comment", "Follow", "LoginEvent", "Post", "Reaction"]
