"""
incidents — Incident reports and the pipeline that reacts to them.

Sub-modules:
    models    — Incident, IncidentSubmission, is_alert_worthy
    pipeline  — validate → persist → certification + alert side effects
"""
