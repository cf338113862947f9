"""Baseline lock (dual signature) and the original-commitment audit record.

A milestone's baseline is committed when both the supplier PM and the customer
PM have signed. From then on the milestone, and everything published to it from
the planner, is protected until an administrator resets the baseline. Resetting
never removes recorded baseline versions.
"""
