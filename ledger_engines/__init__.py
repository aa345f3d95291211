"""
Pure calculation engines.

Engines take frozen inputs populated by the service layer and return
frozen results.  No database access and no clock.
"""
