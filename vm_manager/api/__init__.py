"""HTTP control panel."""
