"""
input — Trigger and verification sources for the emergency state machine.

Voice keyword spotting over transcribed utterances, the press-and-hold
emergency button, and the care reminder list whose completions count as
proof of activity.
"""
