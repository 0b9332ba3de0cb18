"""Test package for Cosmos Mind.

Engine behaviour is tested directly against seeded engines and a fake
clock; the pygame shell is exercised headlessly with SDL's dummy video
driver. Run ``pytest`` from the project root.
"""
