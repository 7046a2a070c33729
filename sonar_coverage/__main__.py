from sonar_coverage.cli import main

main()
