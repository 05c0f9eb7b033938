"""
Academic Risk Analytics
-------------------------
Detects academically at-risk students with an Isolation Forest over per-student
aggregates, and manages what staff do with the resulting Detections.

Modules:
  features.py        - aggregate AcademicRecords into per-student feature vectors
  isolation_model.py - scale features, fit the seeded Isolation Forest, normalise scores
  classifier.py      - anomaly type decision list, priority and criticality tiers
  pipeline.py        - run_detection(): dedup, persistence, alerts, execution log
  status.py          - Detection status state machine with audit trail
  referrals.py       - referral workflow towards support offices
"""
