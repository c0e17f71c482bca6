"""Reports subpackage - tabular Kombo and frequency comparisons."""
