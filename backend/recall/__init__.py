"""Recall: FSRS spaced-repetition scheduling core."""
