"""
Workspace sync client service package.
"""
