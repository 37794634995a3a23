"""Squad Chat command-line interface"""
