"""Test package for the SSB practice trainer.

Core tests drive the sequence controller with a fake clock, so no test
sleeps. UI tests run headlessly using pygame's dummy video driver to avoid
opening real windows. To run these tests, execute ``pytest`` from the
project root.
"""
