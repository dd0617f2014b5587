"""Services layer - stage transitions, BOM resolution, deduction ledger, stock movements."""
