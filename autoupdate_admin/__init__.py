"""Administrative command-line interface (click)."""
