"""
Exchange workspace sync: mirrors PracticePanther contacts, matters and tasks
into the local exchange database.
"""
