"""Document store and read queries"""
