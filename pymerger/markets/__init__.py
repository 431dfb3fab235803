"""Market-level computation of marginal costs and equilibrium prices."""
