"""
pipeline — Session wiring.

SafetyConcierge builds the clock, state machine, history recorder, alert
dispatcher and trigger sources, and connects them into one session.
"""
