"""Update checks for installed caves and the periodic update scheduler."""
