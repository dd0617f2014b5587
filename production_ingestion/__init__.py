"""
production_ingestion -- inbound board webhook edge.

Verifies, classifies and applies "card moved" deliveries from the board:
signature check, event classification, stage resolution, stage transition
and (at the deduction stage) stock deduction.  The kernel never imports
from here.
"""
