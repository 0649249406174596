"""
fastfacts - Math fact fluency progression engine.

Drills arithmetic facts in timed sessions and moves each fact through
the fluency stages (learning, accuracy practice, fluency 6s down to 1s,
mastered) as the learner proves both speed and accuracy.
"""

__version__ = "0.1.0"
