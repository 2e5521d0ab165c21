"""
Command line front end for pyscratch.
"""
