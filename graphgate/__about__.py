__version__ = "0.4.2"
__description__ = "graphgate : metadata driven graph object request routing for Flask"
