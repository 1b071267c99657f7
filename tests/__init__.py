"""Test package for the rhythm captcha.

Core modules (telemetry, scoring, scheduling, challenge state machine) are
tested against an injected fake clock. The pygame shell is exercised
headlessly with SDL's dummy video and audio drivers. Run ``pytest`` from the
project root.
"""
