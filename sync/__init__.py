"""Schedule reconciliation, group tree processing and jobs"""
