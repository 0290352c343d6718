"""
certification — Staff training grading and certification lifecycle.

Sub-modules:
    models            — records (Certification, UserProgress, modules, questions)
    grading           — pure quiz scoring
    engine            — certification state transitions and lazy decay
    training_service  — quiz submission / module start entry points
    catalogue         — standard curriculum and idempotent seeding
"""
