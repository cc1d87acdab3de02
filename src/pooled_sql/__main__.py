from pooled_sql.main import main

main()
