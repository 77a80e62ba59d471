from create_datadao.cli import main

main()
