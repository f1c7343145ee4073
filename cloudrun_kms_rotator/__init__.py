"""
Cloud Run service: Eventarc audit-log events -> Cloud KMS rotation-period updates.
"""
