"""
Poll-based quiz bot: timed multiple-choice quizzes run through chat polls.
"""
