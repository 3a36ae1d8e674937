#!/usr/bin/env python3
"""
Kaleido Programming Language Command Line Interface
Provides REPL and file execution capabilities.
"""

import sys
import argparse
import kaleido


def make_session(args, filename: str) -> kaleido.Session:
    return kaleido.Session(filename, show_tokens=args.tokens, show_ast=args.ast,
                           emit_ir=args.emit_ir)


def print_results(results):
    for value in results:
        print(f"{value:g}")


def repl(args):
    """Run the Kaleido REPL (Read-Eval-Print Loop)."""
    print("Kaleido Programming Language REPL")
    print(f"Version {kaleido.__version__}")
    print("Type 'exit' or 'quit' to leave, 'help' for help.\n")

    # Definitions and operators persist across lines
    session = make_session(args, "<repl>")

    while True:
        try:
            line = input("ready> ")

            if line.strip().lower() in ['exit', 'quit']:
                print("Goodbye!")
                break

            if line.strip().lower() == 'help':
                print_help()
                continue

            if line.strip() == '':
                continue

            results = session.evaluate(line)

            if session.error_reporter.has_errors():
                session.error_reporter.print_errors()
                session.error_reporter.clear()
            print_results(results)

        except KeyboardInterrupt:
            print("\nKeyboardInterrupt")
            break
        except EOFError:
            print("\nGoodbye!")
            break


def print_help():
    """Print REPL help."""
    print("""
Kaleido REPL Help:
- Type a definition, an extern or an expression, ending with ';'
- Use 'exit' or 'quit' to leave the REPL
- Press Ctrl+C or Ctrl+D to exit
- Functions and operators persist across lines

Example usage:
  ready> def fib(x) if x < 3 then 1 else fib(x-1) + fib(x-2);
  ready> fib(10);
  55

  ready> def binary : 1 (x y) y;
  ready> extern printd(x);
  ready> printd(1) : printd(2) : 3;
  1.000000
  2.000000
  3
""")


def run_source(args, source: str, filename: str) -> int:
    """Evaluate a whole program; returns the process exit status."""
    session = make_session(args, filename)
    results = session.evaluate(source)
    print_results(results)

    if session.error_reporter.has_errors():
        session.error_reporter.print_errors()
        return 1
    return 0


def run_file(args, filename: str) -> int:
    """Run a Kaleido source file."""
    try:
        with open(filename, 'r', encoding='utf-8') as file:
            source_code = file.read()
    except OSError as e:
        print(f"Error reading file '{filename}': {e}", file=sys.stderr)
        return 1
    return run_source(args, source_code, filename)


def main():
    """Main entry point for the Kaleido CLI."""
    parser = argparse.ArgumentParser(
        description="Kaleido Programming Language",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          # Start REPL
  %(prog)s program.kal              # Run a Kaleido file
  %(prog)s -c "def f(x) x*2; f(4);" # Execute code directly
        """
    )

    parser.add_argument(
        'file',
        nargs='?',
        help='Kaleido source file to execute'
    )

    parser.add_argument(
        '-c', '--command',
        help='Execute a single command'
    )

    parser.add_argument(
        '--tokens',
        action='store_true',
        help='Print the token stream to stderr'
    )

    parser.add_argument(
        '--ast',
        action='store_true',
        help='Print each parsed unit to stderr'
    )

    parser.add_argument(
        '--emit-ir',
        action='store_true',
        help='Print the LLVM IR of each generated unit to stderr'
    )

    parser.add_argument(
        '-v', '--version',
        action='version',
        version=f'Kaleido {kaleido.__version__}'
    )

    args = parser.parse_args()

    try:
        if args.command:
            return run_source(args, args.command, "<command>")

        elif args.file:
            return run_file(args, args.file)

        else:
            repl(args)
            return 0

    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
