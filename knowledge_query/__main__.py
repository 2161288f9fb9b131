"""
Entry point for python -m knowledge_query
"""
from knowledge_query.cli import main

if __name__ == '__main__':
    main()
