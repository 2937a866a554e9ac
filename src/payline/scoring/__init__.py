"""Scoring policies for convergence."""

from payline.scoring.tokens import STOP_WORDS, token_overlap, tokenize

__all__ = ["STOP_WORDS", "token_overlap", "tokenize"]
