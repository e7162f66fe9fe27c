"""
Prior Deed Retrieval - a workflow that downloads a property's most recent deed.

Starting from a street address, the pipeline finds the property on a county
assessor site, extracts the recording reference of the last conveyance,
looks that reference up on the county recorder site and captures the
recorded document as validated bytes.
"""
