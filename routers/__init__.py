"""HTTP routes of the Basha Lagbe API, one router per resource."""
