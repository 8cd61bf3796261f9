"""
checkins — Check-in records and their lifecycle.

Sub-modules:
    models      — CheckIn, Contact, EmergencyEvent and related enums
    lifecycle   — State transitions and the notifications they trigger
"""
