"""Classification core: taxonomies, pixel analysis, voting, cascade and quota."""
